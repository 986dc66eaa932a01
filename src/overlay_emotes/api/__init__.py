"""HTTP plumbing for emote catalog APIs."""
