"""WhatsApp quoting assistant: parsers, session store and state machine."""
