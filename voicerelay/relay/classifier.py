"""
Agent trigger classifier

Decides whether an utterance needs the slow tool-executing agent. Plain
substring matching: false positives ("file" inside an unrelated sentence)
and false negatives (tasks phrased without a listed term) are accepted,
skipping the agent is the default.
"""

AGENT_KEYWORDS = (
    'create', 'make', 'write', 'generate',      # File creation
    'file', 'folder', 'directory',              # File operations
    'read', 'open', 'show', 'display',          # File reading
    'edit', 'modify', 'update', 'change',       # File editing
    'add', 'append', 'insert', 'put',           # Adding content
    'delete', 'remove', 'rm',                   # File deletion
    'run', 'execute', 'bash', 'command',        # Code execution
    'search', 'find', 'grep', 'look for',       # File search
    'list', 'ls', 'show files',                 # Directory listing
    'install', 'npm', 'pip',                    # Package management
    'git', 'commit', 'push', 'pull',            # Git operations
    '.txt', '.js', '.py', '.json', '.md',       # File extensions
)


def needs_agent(utterance: str) -> bool:
    """True when the utterance contains any task-indicating term (case-insensitive)."""
    if not utterance:
        return False
    lower = utterance.lower()
    return any(keyword in lower for keyword in AGENT_KEYWORDS)
