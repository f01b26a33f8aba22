"""agentwatch - observability event server for AI-agent runtimes."""
