from flask import jsonify, render_template, request


def wants_json() -> bool:
    if request.is_json:
        return True
    best = request.accept_mimetypes.best_match(['text/html', 'application/json'])
    return best == 'application/json'


def error_response(err):
    """Render an AccessError for API clients (JSON) or browsers (error page)."""
    if wants_json():
        resp = jsonify(err.to_dict())
    else:
        resp = render_template('error.html', message=err.message, code=err.code)
    return resp, err.status, {'Cache-Control': 'no-store'}
