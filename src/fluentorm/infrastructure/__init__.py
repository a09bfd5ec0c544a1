"""Infrastructure layer: SQL mapping, compilation and storage."""
