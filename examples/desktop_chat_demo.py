"""Minimal demonstration of the desktop assistant bridge."""

from desk_bridge import ChatMessage, run_desktop_chat

if __name__ == "__main__":
    context = "[Active Focus]\nWindows Terminal - FedoraLinux-43 shell\n\n[Open Folders]\nC:/src/desk_bridge"
    history = [
        ChatMessage(role="user", content="install podman"),
        ChatMessage(role="assistant", content="Installed podman 5.2 in FedoraLinux-43."),
    ]
    question = "start a mysql container"
    reply = run_desktop_chat(question, context=context, recent_messages=history)
    print("User:", question)
    print("Assistant:", reply)
