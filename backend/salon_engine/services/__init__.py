"""Business services for scheduling, queueing and payment reconciliation."""
