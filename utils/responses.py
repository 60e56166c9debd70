from flask import jsonify


def success(data=None, message: str = None, status: int = 200):
    body = {"success": True, "message": message, "data": data}
    return jsonify(body), status
