import os
import uuid

import streamlit as st
from dotenv import load_dotenv

from chat_session import ChatSession, RelayTransport, Transcript

load_dotenv()

# -------------------- CONFIG --------------------

# On Streamlit Cloud these come from st.secrets
# Locally you can use .env or export env vars
def load_relay_url() -> str:
    try:
        url = st.secrets.get("RELAY_URL")
    except FileNotFoundError:
        url = None
    return url or os.getenv("RELAY_URL", "http://localhost:8000")


# -------------------- UTILS: SESSION STATE --------------------

def get_session_id() -> str:
    if "session_id" not in st.session_state:
        st.session_state["session_id"] = str(uuid.uuid4())
    return st.session_state["session_id"]


def get_chat_session() -> ChatSession:
    if "chat" not in st.session_state:
        st.session_state["chat"] = ChatSession(RelayTransport(load_relay_url()))
    return st.session_state["chat"]


# -------------------- STREAMLIT UI --------------------

def render_reply(placeholder):
    """Redraw the streaming assistant turn after every fragment."""

    def _render(transcript: Transcript) -> None:
        if transcript.pending is None:
            return
        content = transcript.pending.content
        if content:
            placeholder.markdown(content + "▌")
        else:
            placeholder.markdown("_Typing..._")

    return _render


def main():
    st.set_page_config(page_title="Ready to Go?", page_icon="✈️")
    st.title("Ready to Go?")
    st.caption("Your travel preparation assistant")

    session_id = get_session_id()
    chat = get_chat_session()

    # Sidebar
    st.sidebar.header("Session")
    if st.sidebar.button("Start over", disabled=not chat.can_submit()):
        chat.reset()
    st.sidebar.caption(f"Session ID: {session_id}")

    # Display chat history
    for turn in chat.transcript.turns:
        with st.chat_message(turn.role):
            st.markdown(turn.content)

    # User input
    user_input = st.chat_input("Type a message...", disabled=not chat.can_submit())

    if user_input and user_input.strip():
        with st.chat_message("user"):
            st.markdown(user_input)

        with st.chat_message("assistant"):
            placeholder = st.empty()
            placeholder.markdown("_Typing..._")
            chat.submit(user_input, on_update=render_reply(placeholder))
            placeholder.markdown(chat.transcript.turns[-1].content)


if __name__ == "__main__":
    main()
