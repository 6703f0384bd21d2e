"""AdBoard: classified ads grouped by category and searchable by city."""
