BACKENDS = {
    "OpenAIAssistantBackend": "llm.openai_assistant",
    "LocalAssistantBackend": "llm.local_backend",
}
