"""
Realtime conversation components.

This package contains the upstream realtime-model client, the per-call relay
between the media stream and the model, the session builders and the
conversation-mode controller.
"""
