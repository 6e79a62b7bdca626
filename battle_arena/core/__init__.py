"""Battle resolution engine: stats, psychology, judging, scheduling."""
