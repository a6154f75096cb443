"""Wire models for MenuMiner."""
