from __future__ import annotations

import os
from typing import Any, Dict, List, Tuple

import requests
import streamlit as st

from app.render.classifier import (
    CodeBlock,
    MarkdownTable,
    NumberedList,
    RenderDecision,
    classify,
    is_table_shaped,
    render_html,
)
from app.render.export import ExportAction, ExportError, available_actions, export, extract_grid, visible_text


st.set_page_config(page_title="Natural-Language-to-SQL Agent", layout="wide")

API_URL = os.getenv("AGENT_API_URL", "http://localhost:8000/message")
GENERIC_ERROR = "Something went wrong while contacting the assistant. Your conversation is kept; please retry."

_STYLES = """
<style>
.styled-table { border-collapse: collapse; font-size: 0.9rem; min-width: 400px; }
.styled-table th, .styled-table td { border: 1px solid #ddd; padding: 6px 10px; }
.styled-table thead tr { background-color: #f97316; color: #ffffff; text-align: left; }
.table-scroll { overflow-x: auto; }
</style>
"""


def _call_agent(messages: List[Dict[str, str]]) -> str:
    response = requests.post(
        API_URL,
        json={"messages": messages},
        timeout=float(os.getenv("AGENT_API_TIMEOUT", "120")),
    )
    try:
        payload = response.json()
    except ValueError:
        payload = {}
    if not response.ok:
        message = payload.get("error") if isinstance(payload, dict) else None
        raise requests.HTTPError(message or response.text, response=response)
    result = payload.get("result") if isinstance(payload, dict) else None
    if not isinstance(result, str):
        raise requests.HTTPError("Agent API returned no result.", response=response)
    return result


_LABELS = {
    ExportAction.CSV: "Export CSV",
    ExportAction.SPREADSHEET: "Export Excel",
    ExportAction.MARKUP: "Export HTML",
}


@st.cache_data(show_spinner=False, max_entries=256)
def _build_export(text: str, action: str) -> Tuple[str, str, bytes] | str:
    """Export file for one response, built once per (text, action); a string is the failure notice."""
    try:
        file = export(classify(text), ExportAction(action))
    except ExportError as exc:
        return str(exc)
    return file.file_name, file.mime, file.data


def _render_exports(text: str, decision: RenderDecision, key: str) -> None:
    actions = available_actions(decision)
    with st.expander("Copy / export", expanded=False):
        if is_table_shaped(decision):
            st.caption("Copy")
            st.code(visible_text(decision), language=None)

        for col, action in zip(st.columns(len(actions)), actions):
            with col:
                built = _build_export(text, action.value)
                if isinstance(built, str):
                    st.info(built)
                    continue
                file_name, mime, data = built
                st.download_button(_LABELS[action], data, file_name=file_name, mime=mime, key=f"{key}_{action.value}")


def _render_response(text: str, key: str) -> None:
    decision = classify(text)
    if isinstance(decision, MarkdownTable):
        try:
            st.dataframe(extract_grid(decision).to_frame(), use_container_width=True)
        except ExportError as exc:
            st.warning(str(exc))
    elif isinstance(decision, CodeBlock):
        st.code(decision.code)
    elif isinstance(decision, NumberedList):
        st.markdown("\n".join(f"{index}. {item}" for index, item in enumerate(decision.items, start=1)))
    else:
        # HTML tables, download links and plain text render as markup.
        st.markdown(render_html(decision), unsafe_allow_html=True)
    _render_exports(text, decision, key)


def _render_conversation(conversation: List[Dict[str, Any]]) -> None:
    for index, turn in enumerate(conversation):
        role = turn.get("role")
        if role == "user":
            with st.chat_message("user"):
                st.write(turn.get("content", ""))
        elif role == "assistant":
            with st.chat_message("assistant"):
                _render_response(turn.get("content", ""), key=f"turn_{index}")


def main() -> None:
    st.title("Natural-Language-to-SQL Agent")
    st.caption("Ask questions about your databases in plain language.")
    st.markdown(_STYLES, unsafe_allow_html=True)

    conversation: List[Dict[str, Any]] = st.session_state.setdefault("conversation", [])

    with st.sidebar:
        if st.button("New conversation", key="reset_conversation"):
            st.session_state["conversation"] = []
            st.session_state.pop("last_error", None)
            st.rerun()

    _render_conversation(conversation)

    error = st.session_state.get("last_error")
    if error:
        st.error(error)

    prompt = st.chat_input("Type your message...")
    if not prompt:
        return

    history = conversation + [{"role": "user", "content": prompt.strip()}]
    with st.spinner("Thinking..."):
        try:
            reply = _call_agent(history)
        except requests.RequestException as exc:
            # History stays as it was so the user can resend.
            st.session_state["last_error"] = f"{GENERIC_ERROR} ({exc})"
            st.rerun()
    history.append({"role": "assistant", "content": reply})
    st.session_state["conversation"] = history
    st.session_state.pop("last_error", None)
    st.rerun()


if __name__ == "__main__":
    main()
