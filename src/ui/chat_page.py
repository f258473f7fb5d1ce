"""NiceGUI report interface with SSE streaming support."""

import os
from datetime import datetime

from nicegui import app, events, ui

from src.models.schemas import FilePart, ImagePart
from src.ui.report import Report, build_report, markdown_to_html
from src.ui.stream import ChatSession, ChatStreamClient, OutgoingFile, api_base_url

THREAD_KEY = "thread_id"
BIOME_KEY = "biome"
BIOMES = {"Forest": "park", "Coastal": "waves", "River": "water_drop"}
DEFAULT_BIOME = "Forest"

CUSTOM_CSS = """
<link href="https://fonts.googleapis.com/css2?family=Inter:wght@400;500;600&display=swap"
      rel="stylesheet">
<link href="https://fonts.googleapis.com/icon?family=Material+Icons" rel="stylesheet">
<style>
    * { font-family: 'Inter', sans-serif; }

    body.biome-forest  { --accent: #2f7d4f; --accent-2: #6fae5c; --bg: #eef5ee; }
    body.biome-coastal { --accent: #1f6f8b; --accent-2: #5fb3c9; --bg: #edf5f8; }
    body.biome-river   { --accent: #2b5ea7; --accent-2: #62a0d8; --bg: #eef2f9; }
    body { background: var(--bg); min-height: 100vh; }

    .app-container {
        background: white;
        border-radius: 12px;
        box-shadow: 0 2px 8px rgba(0, 0, 0, 0.1);
        overflow: hidden;
    }

    .header { background: linear-gradient(135deg, var(--accent) 0%, var(--accent-2) 100%); }

    .notice { color: #6b7280; font-size: 13px; }
    .error-tag { color: #b91c1c; font-size: 14px; }

    .ellipsis span {
        display: inline-block;
        font-size: 28px;
        color: var(--accent);
        animation: bounce 1.4s infinite ease-in-out;
    }
    .ellipsis span:nth-child(2) { animation-delay: 0.2s; }
    .ellipsis span:nth-child(3) { animation-delay: 0.4s; }

    @keyframes bounce {
        0%, 60%, 100% { transform: translateY(0); }
        30% { transform: translateY(-6px); }
    }

    .skeleton-line {
        height: 12px; margin: 8px 0; border-radius: 6px;
        background: linear-gradient(90deg, #e5e7eb 0%, #f3f4f6 50%, #e5e7eb 100%);
    }

    .send-btn { background: linear-gradient(135deg, var(--accent) 0%, var(--accent-2) 100%) !important; }

    /* Report styling */
    .report-body { font-size: 16px; line-height: 1.55; color: #1f2937; }
    .report-body h1 { font-size: 1.5rem; font-weight: 600; margin: 1rem 0 0.5rem; }
    .report-body h2 { font-size: 1.25rem; font-weight: 600; margin: 1rem 0 0.5rem; }
    .report-body h3 { font-size: 1.1rem; font-weight: 600; margin: 0.75rem 0 0.25rem; }
    .report-body strong { font-weight: 600; }
    .report-body em { font-style: italic; }
    .report-body a { color: var(--accent); text-decoration: underline; }
    .report-body code { font-family: 'Menlo', 'Monaco', monospace; background: #f3f4f6; padding: 0 4px; }
    .report-body .report-code { background: #1f2937; color: #f9fafb; padding: 12px; border-radius: 8px; }
    .report-body .report-list { margin: 0.5rem 0 0.5rem 1.25rem; list-style: disc; }
    .report-body ol.report-list { list-style: decimal; }
    .report-table { border-collapse: collapse; margin: 0.5rem 0; }
    .report-table th, .report-table td { border: 1px solid #e5e7eb; padding: 4px 8px; }
    .toc .lvl-2 { padding-left: 12px; }
    .toc .lvl-3 { padding-left: 24px; }
    .section-label { font-weight: 600; color: #374151; margin-top: 12px; }
    .print-only { display: none; }

    @media print {
        .no-print { display: none !important; }
        .print-only { display: block !important; }
        body { background: white; }
    }
</style>
"""


def file_url(file_id: str | None) -> str:
    return f"{api_base_url()}/files/{file_id}"


class PageState:
    """Per-page view flags and pending attachments."""

    def __init__(self) -> None:
        self.show_composer = True
        self.show_report = False
        self.files: list[OutgoingFile] = []

    @property
    def files_label(self) -> str:
        return f"{len(self.files)} file(s) selected" if self.files else ""


@ui.page("/")
def chat_page() -> None:
    """Main report page."""
    ui.add_head_html(CUSTOM_CSS)

    storage = app.storage.user
    # Sessions are never resumed automatically
    storage.pop(THREAD_KEY, None)
    biome = storage.get(BIOME_KEY, DEFAULT_BIOME)
    if biome not in BIOMES:
        biome = DEFAULT_BIOME

    state = PageState()
    session = ChatSession(on_thread_change=lambda tid: storage.update({THREAD_KEY: tid}))
    stream_client = ChatStreamClient()

    input_field: ui.textarea
    upload: ui.upload
    biome_btn: ui.button
    lightbox = ui.dialog()
    with lightbox:
        lightbox_image = ui.image().classes("max-w-[90vw]")

    def apply_biome(name: str) -> None:
        ui.query("body").classes(
            add=f"biome-{name.lower()}",
            remove=" ".join(f"biome-{b.lower()}" for b in BIOMES if b != name),
        )
        storage[BIOME_KEY] = name

    def next_biome() -> None:
        nonlocal biome
        names = list(BIOMES)
        biome = names[(names.index(biome) + 1) % len(names)]
        apply_biome(biome)
        biome_btn.set_text(biome)
        biome_btn.props(f"icon={BIOMES[biome]}")

    def open_lightbox(src: str) -> None:
        lightbox_image.set_source(src)
        lightbox.open()

    def render_attachments(attachments: list[ImagePart | FilePart]) -> None:
        ui.label("Evidence attachments").classes("section-label")
        with ui.row().classes("w-full gap-3 flex-wrap"):
            for part in attachments:
                src = file_url(part.file_id)
                if isinstance(part, ImagePart):
                    ui.image(src).classes("w-72 rounded-xl border cursor-pointer").on(
                        "click", lambda _, s=src: open_lightbox(s)
                    )
                else:
                    ui.link(f"📄 {part.filename or part.file_id}", src).classes("text-sm")

    def render_report_body(report: Report) -> None:
        ui.label("Assessment report").classes("text-lg font-semibold")
        if report.headings:
            with ui.column().classes("toc gap-1 my-2"):
                ui.label("Contents").classes("section-label")
                for h in report.headings:
                    ui.link(h.text, f"#{h.id}").classes(f"lvl-{h.level} text-sm")
        ui.html(markdown_to_html(report.text), sanitize=False).classes("report-body w-full")
        if report.attachments:
            render_attachments(report.attachments)
        if report.links:
            ui.label("References").classes("section-label")
            with ui.column().classes("gap-1"):
                for link in report.links:
                    with ui.row().classes("gap-2 items-baseline"):
                        ui.link(link.label, link.href, new_tab=True).classes("text-sm")
                        ui.label(f"({link.href})").classes("text-xs text-gray-400")

    @ui.refreshable
    def report_view() -> None:
        report = build_report(session.messages)
        if session.error:
            ui.label(f"Error: {session.error}").classes("error-tag")
        if report is None or not report.text:
            ui.label(
                "Add files to analyse, or write a short description, then select Analyse."
            ).classes("text-gray-500")
        if session.is_current_streaming:
            with ui.column().classes("w-full gap-0"):
                for width in ("w-4/5", "w-11/12", "w-3/4", "w-3/5"):
                    ui.element("div").classes(f"skeleton-line {width}")
        if report is not None and report.text:
            if session.unreconciled:
                ui.label(
                    "Showing the streamed answer; the saved report could not be loaded."
                ).classes("notice")
            render_report_body(report)

    @ui.refreshable
    def print_view() -> None:
        report = build_report(session.messages)
        if report is not None and report.text:
            render_report_body(report)

    def refresh() -> None:
        report_view.refresh()
        print_view.refresh()

    async def handle_upload(e: events.UploadEventArguments) -> None:
        content = await e.file.read()
        state.files.append(
            OutgoingFile(name=e.file.name, content=content, content_type=e.file.content_type)
        )

    async def send() -> None:
        text = input_field.value or ""
        if (not text.strip() and not state.files) or session.is_loading:
            return

        files = list(state.files)
        state.show_composer = False
        state.show_report = True
        input_field.value = ""
        state.files.clear()
        upload.reset()

        await stream_client.send(session, text, files, on_change=refresh)
        if session.error:
            ui.notify(session.error, type="negative")

    def copy_insights() -> None:
        report = build_report(session.messages)
        ui.clipboard.write(report.text if report else "")
        ui.notify("Copied insights")

    def export_pdf() -> None:
        ui.run_javascript("window.print()")
        ui.notify("Export started - check your browser's print dialog")

    def reset_analysis() -> None:
        session.reset()
        state.show_composer = True
        state.show_report = False
        state.files.clear()
        input_field.value = ""
        upload.reset()
        refresh()

    apply_biome(biome)

    # === UI Layout ===
    with (
        ui.element("div").classes("w-full min-h-screen p-4 md:p-8"),
        ui.column().classes("w-full max-w-4xl mx-auto app-container"),
    ):
        # Header
        with ui.row().classes("w-full header px-5 py-4 items-center justify-between no-print"):
            with ui.row().classes("items-center gap-3"):
                ui.icon("eco").classes("text-white text-3xl")
                with ui.column().classes("gap-0"):
                    ui.label("ecoSure").classes("text-lg font-semibold text-white")
                    ui.label("Biodiversity • Conservation • Compliance").classes(
                        "text-xs text-white/80"
                    )
            biome_btn = ui.button(biome, icon=BIOMES[biome], on_click=next_biome).props(
                "flat color=white"
            )

        # Print header
        with ui.column().classes("print-only w-full px-5 py-4"):
            ui.label("ecoSure - Environmental Advice Report").classes("text-xl font-semibold")
            ui.label(
                f"{datetime.now().strftime('%d %B %Y, %I:%M %p')} · Queensland, Australia"
            ).classes("text-sm text-gray-500")
            print_view()

        with ui.column().classes("w-full px-5 gap-3 no-print"):
            ui.label("Queensland, Australia only - may not apply outside QLD.").classes("notice")

            # Composer
            with ui.column().classes("w-full gap-2").bind_visibility_from(state, "show_composer"):
                ui.label("Details (optional)").classes("text-sm text-gray-500")
                input_field = (
                    ui.textarea(
                        placeholder="Describe your project or question for environmental advice"
                    )
                    .props("outlined autogrow")
                    .classes("w-full")
                    .on("keydown.ctrl.enter", send)
                    .on("keydown.meta.enter", send)
                )
                with ui.row().classes("items-center gap-3"):
                    upload = ui.upload(
                        label="Choose files",
                        multiple=True,
                        auto_upload=True,
                        on_upload=handle_upload,
                    ).props("flat bordered")
                    ui.label().bind_text_from(state, "files_label").classes("text-sm")
                with ui.row().classes("w-full justify-end gap-2"):
                    ui.button("Copy insights", icon="content_copy", on_click=copy_insights).props(
                        "flat"
                    ).bind_enabled_from(session, "is_loading", backward=lambda v: not v)
                    ui.button("Analyse", icon="send", on_click=send).props(
                        "unelevated text-color=white"
                    ).classes("send-btn").bind_enabled_from(
                        session, "is_loading", backward=lambda v: not v
                    )
                ui.label().bind_text_from(
                    session, "error", backward=lambda e: f"Error: {e}" if e else ""
                ).classes("error-tag")

            with ui.row().classes("w-full justify-center").bind_visibility_from(
                state, "show_composer", backward=lambda v: not v
            ):
                ui.button("Analyse more", on_click=reset_analysis).props("outline")

            # Between-state indicator
            with ui.row().classes("w-full justify-center ellipsis").bind_visibility_from(
                session, "show_ellipsis"
            ):
                for _ in range(3):
                    ui.html("<span>.</span>", sanitize=False)

            # Report
            with ui.column().classes("w-full py-2").bind_visibility_from(state, "show_report"):
                report_view()

            with ui.row().classes("w-full justify-end pb-4"):
                ui.button("Export PDF", icon="picture_as_pdf", on_click=export_pdf).props("flat")


def main() -> None:
    ui.run(
        title="ecoSure",
        port=int(os.getenv("UI_PORT", "8080")),
        reload=False,
        storage_secret=os.getenv("NICEGUI_STORAGE_SECRET", "ecosure-secret"),
    )


if __name__ == "__main__":
    main()
