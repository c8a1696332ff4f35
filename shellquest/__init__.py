"""ShellQuest: an in-memory Linux filesystem and shell for terminal training."""
