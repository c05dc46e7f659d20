"""Prompt templates for cluster naming."""

CLUSTER_NAME_SYSTEM_PROMPT = """You are an expert at analyzing document content and creating concise, descriptive topic names.
Your task is to analyze the provided text content and suggest a short, clear topic name (2-4 words) that best represents the main theme or subject matter.

Rules:
- Respond with ONLY the topic name, no explanations
- Use 2-4 words maximum
- Make it descriptive and specific
- Avoid generic words like "content", "documents", "topics"
- Focus on the main subject matter or domain
- Use title case (e.g., "Machine Learning Algorithms", "Financial Planning")"""

CLUSTER_NAME_USER_PROMPT = """Analyze this content and suggest a concise topic name:

{content}"""

COLLECTION_CLUSTER_SYSTEM_PROMPT = """You are a knowledge organization expert. Generate a concise, descriptive cluster name (2-4 words) for organizing related collections.

Rules:
- Respond with ONLY the cluster name
- Focus on the main topic or domain
- Use title case (e.g., "Machine Learning Research", "Project Documentation")
- Be specific but not too narrow
- Avoid generic words like "content", "documents", "cluster"."""

COLLECTION_CLUSTER_USER_PROMPT = """Generate a cluster name for organizing collections like: "{name}"
Description: {description}

Cluster name:"""
