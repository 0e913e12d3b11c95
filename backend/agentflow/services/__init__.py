"""Domain services for tasks, agents, queues, and LLM access."""
