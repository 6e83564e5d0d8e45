"""Gradio UI for groundchat."""

import asyncio
from typing import Any, AsyncIterator, List, Optional, Tuple

import gradio as gr

from groundchat.session import ChatSession
from groundchat.ui.render import conversation_choices, to_chatbot_messages

Outputs = Tuple[Any, List[dict], str, Optional[List[str]], str]


def render_outputs(session: ChatSession) -> Outputs:
    """Render the session into the values of the page components.

    Args:
        session: The chat session.

    Returns:
        A tuple of (conversation_list_update, chat_messages, question, attachments, error_message).
    """
    state = session.store.state
    conversation_list = gr.update(choices=conversation_choices(state), value=state.active_conversation_id)
    attachments = [str(path) for path in session.attachments] or None
    error_message = f"⚠️ {session.error}" if session.error else ""
    return (
        conversation_list,
        to_chatbot_messages(state.active_conversation),
        session.question,
        attachments,
        error_message,
    )


async def stream_send(session: ChatSession, question: str, file_paths: Optional[List[str]]) -> AsyncIterator[Outputs]:
    """Send a message and yield the page after every committed change.

    Args:
        session: The chat session.
        question: The question text.
        file_paths: Paths of the uploaded files.

    Yields:
        The rendered page outputs.
    """
    session.question = question or ""
    session.attachments = []
    session.add_files(file_paths or [])
    if not session.can_send:
        yield render_outputs(session)
        return

    changed = asyncio.Event()
    unsubscribe = session.store.subscribe(lambda _: changed.set())
    task = asyncio.create_task(session.send())
    try:
        while not task.done():
            waiter = asyncio.create_task(changed.wait())
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
            waiter.cancel()
            changed.clear()
            yield render_outputs(session)
        await task
    finally:
        unsubscribe()

    yield render_outputs(session)


def create_ui(session: ChatSession, share_base_url: str) -> gr.Blocks:
    """Create the UI.

    Args:
        session: The chat session the page operates on.
        share_base_url: Base URL used to build share links.

    Returns:
        A Gradio Blocks component for the UI.
    """
    state = session.store.state

    with gr.Blocks(title="Groundchat") as app:
        with gr.Row():
            with gr.Column(scale=1):
                gr.Markdown("### Conversations")
                new_chat_btn = gr.Button("New Chat", variant="primary")
                conversation_list = gr.Radio(
                    choices=conversation_choices(state),
                    value=state.active_conversation_id,
                    label="Select a conversation",
                    type="value",
                    interactive=True,
                )

                with gr.Accordion("Manage conversation", open=False):
                    title_box = gr.Textbox(label="Title", placeholder="New title")
                    rename_btn = gr.Button("Rename")
                    delete_btn = gr.Button("Delete", variant="stop")
                    share_btn = gr.Button("Create share link")
                    share_link = gr.Textbox(label="Share link", interactive=False, show_copy_button=True)
                    import_box = gr.Textbox(label="Import share link")
                    import_btn = gr.Button("Import")

            with gr.Column(scale=3):
                chatbot = gr.Chatbot(
                    value=to_chatbot_messages(state.active_conversation),
                    height=500,
                    show_copy_button=True,
                    render_markdown=True,
                    type="messages",
                )
                error_box = gr.Markdown("")
                files = gr.File(label="Attachments", file_count="multiple", type="filepath")
                with gr.Row():
                    with gr.Column(scale=8):
                        msg = gr.Textbox(
                            placeholder="Ask a question or describe the problem...",
                            show_label=False,
                            container=False,
                        )
                    with gr.Column(scale=1):
                        submit_btn = gr.Button("Send", variant="primary")

        outputs = [conversation_list, chatbot, msg, files, error_box]

        # Event handlers

        def refresh() -> Outputs:
            return render_outputs(session)

        def new_chat() -> Outputs:
            session.new_conversation()
            return render_outputs(session)

        def select_chat(conversation_id: str) -> Outputs:
            if conversation_id:
                session.select_conversation(conversation_id)
            return render_outputs(session)

        def rename_chat(title: str) -> Outputs:
            session.store.rename_conversation(session.store.state.active_conversation_id, title or "")
            return render_outputs(session)

        def delete_chat() -> Outputs:
            session.store.delete_conversation(session.store.state.active_conversation_id)
            return render_outputs(session)

        def share_chat() -> str:
            return session.share_url(share_base_url)

        def import_chat(link: str) -> Outputs:
            session.import_link(link or "")
            return render_outputs(session)

        async def send(question: str, file_paths: Optional[List[str]]) -> AsyncIterator[Outputs]:
            async for rendered in stream_send(session, question, file_paths):
                yield rendered

        app.load(fn=refresh, outputs=outputs)
        new_chat_btn.click(fn=new_chat, outputs=outputs)
        conversation_list.input(fn=select_chat, inputs=[conversation_list], outputs=outputs)
        rename_btn.click(fn=rename_chat, inputs=[title_box], outputs=outputs).then(fn=lambda: "", outputs=[title_box])
        delete_btn.click(fn=delete_chat, outputs=outputs)
        share_btn.click(fn=share_chat, outputs=[share_link])
        import_btn.click(fn=import_chat, inputs=[import_box], outputs=outputs).then(fn=lambda: "", outputs=[import_box])
        submit_btn.click(fn=send, inputs=[msg, files], outputs=outputs)
        msg.submit(fn=send, inputs=[msg, files], outputs=outputs)

    return app
