"""PromptSchola backend: tier resolution, prompt authoring rules and lesson step handlers."""

__version__ = "0.1.0"
