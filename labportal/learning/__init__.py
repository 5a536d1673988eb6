"""Student-facing context: labs, video submissions, self-checkoffs and own progress."""
