"""Email job handlers: message builders and the task-type dispatcher."""
