"""NiceGUI interface - thin presentation layer over the relay API.

Responsibilities:
    - Incremental SSE parsing and conversation state (stream)
    - Report assembly: headings, contents, references, attachments (report)
    - Composer, biome theme, report view and print export (chat_page)

Contains no business logic. Delegates all operations to the API.
"""
