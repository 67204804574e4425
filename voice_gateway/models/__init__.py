"""
Models module for data structures and state management in the voice gateway.

Key components:
- call: The ``Call`` state (caller, stream, mode, transcript) and the immutable
  ``CallHistoryEntry`` written when a call ends.
- media_schemas: Pydantic models for the Twilio Media Streams frames.
- realtime_schemas: Pydantic models and event builders for the OpenAI Realtime API.
- cache: The read-only briefing cache snapshot.

Usage examples:
```python
from voice_gateway.models.call import Call, Speaker

call = Call.for_caller("+16045551234")
call.add_line(Speaker.CALLER, "what's on my calendar?")
print(call.render_transcript("Henry"))
```
"""
