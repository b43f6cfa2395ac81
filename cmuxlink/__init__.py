"""cmuxlink - bind logical workspaces to cmux runtime sessions."""
