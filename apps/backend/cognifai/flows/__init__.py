"""スケジューラ・ストア・LLM を組み合わせたユースケース層。"""
