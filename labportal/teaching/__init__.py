"""Staff-facing context: review queue, lab locking/content and the student roster."""
