# run.py
import os
from customs_app.main import create_app

# Create an instance of the app using the factory function
app = create_app()

if __name__ == '__main__':
    # Default to 0.0.0.0 to be accessible externally if needed (e.g., in a container).
    host = os.environ.get('FLASK_RUN_HOST', '0.0.0.0')
    port = int(os.environ.get('FLASK_RUN_PORT', 5001))
    debug_mode = os.environ.get('FLASK_DEBUG', 'False').lower() in ['true', '1', 't']

    print(f"Starting customs automation API on {host}:{port} (Debug: {debug_mode})")
    app.run(host=host, port=port, debug=debug_mode)
