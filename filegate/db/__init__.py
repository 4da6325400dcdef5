"""FileGate persistence — declarative models and session management."""
