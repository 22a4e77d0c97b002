"""WhatsApp simulator core: pure Python, framework free"""
