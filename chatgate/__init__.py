"""chatgate -- one chat interface over Claude, Ollama and LM Studio, with local tool execution."""

__version__ = "0.1.0"
