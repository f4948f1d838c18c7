"""Sales-team notifications (Slack, email)."""
