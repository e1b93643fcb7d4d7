"""Orbit Smoke - end-to-end smoke testing for the Orbit control-plane agent.

The harness starts the agent as a child process, waits for it to answer its
status endpoint, issues a scoped token, exercises the API with both the
admin and the scoped credential, and always stops the agent afterwards.
"""

__version__ = "0.1.0"
