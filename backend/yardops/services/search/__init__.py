"""Order search backed by Elasticsearch with a SQL fallback."""
