"""notesync - Sync a notes vault with a cloud remote through rclone."""
