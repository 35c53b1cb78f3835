"""
Web interface for the Visual Flow compiler: REST API plus Socket.IO preview push.
"""
