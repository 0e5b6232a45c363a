"""Agents shipped with InboxQ, in registration order."""

from inboxq.agents.builtin import auto_archive, reply_drafter, todo_digest

BUILTIN_AGENTS = [
    ("reply_drafter", reply_drafter.register),
    ("todo_digest", todo_digest.register),
    ("auto_archive", auto_archive.register),
]
