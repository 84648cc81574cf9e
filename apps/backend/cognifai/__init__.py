"""CognifAI backend: spaced-repetition scheduling, Firestore persistence and AI question generation."""
