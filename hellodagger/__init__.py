"""hellodagger - container pipelines and a coding agent for a Node web app."""
