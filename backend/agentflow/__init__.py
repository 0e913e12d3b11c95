"""AgentFlow backend package."""
