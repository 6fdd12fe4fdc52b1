"""
Similarity pipeline components.

vector_math -> model_provider -> text_chunker -> aggregator -> controller
"""
