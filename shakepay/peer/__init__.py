"""Model peer: the multimodal model the session streams to and takes calls from."""
