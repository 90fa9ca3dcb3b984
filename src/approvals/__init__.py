"""Hierarchical approval-chain engine.

Rule matching -> manager chain resolution -> chain construction at
submission time; the state machine then drives approve / reject / rescind
and hands terminal approvals to the completion-effects outbox.
"""
