"""Core functionality for the Image Playground backend.

The core package holds everything that does not depend on HTTP:

1. **Configuration Layer** (config.py):
   - Environment-based configuration using Pydantic Settings
   - Storage mode resolution and cost rate injection

2. **Request Guards** (filenames.py, auth.py):
   - Safe-filename policy shared by the retrieval and deletion paths
   - Optional password gate comparing SHA-256 hashes

3. **Provider Gateway** (provider.py):
   - Parameter normalisation for the OpenAI images API
   - Response shape checks before anything is persisted

4. **Persistence** (storage.py):
   - Filesystem and client-side (IndexedDB) storage strategies
   - Itemized bulk deletion reports

5. **Support Utilities**:
   - cost.py: Usage-to-cost estimation
   - errors.py: Exception hierarchy mapped to HTTP status codes

See Also
--------
- imageplayground.api.main: Route handlers that compose these pieces
"""
