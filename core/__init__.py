"""Pipeline coordinator, stage workers, inference engine and errors."""
