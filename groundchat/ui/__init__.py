"""Gradio UI for groundchat."""
