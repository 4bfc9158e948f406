"""Per-connection pipeline: media pacing, the model-peer adapter and payment jobs."""
