"""Token dictionaries, label transforms, audio features and evaluation datasets."""
