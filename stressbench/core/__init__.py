"""
Core harness components: fault classification, retry, id generation,
pool sizing and warm-up, workload driving and result validation.
"""
