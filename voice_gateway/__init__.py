"""
Personal voice-assistant gateway.

Bridges Twilio Media Streams calls to the OpenAI Realtime API and gives the
model a fixed set of tools for tasks, calendar, email, memory and search.
"""
