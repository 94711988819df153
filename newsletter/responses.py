# /newsletter/responses.py
# Response envelope shared by every endpoint: {success, data?, error?}.

from flask import jsonify


def success_response(data=None, status=200):
    body = {'success': True}
    if data is not None:
        body['data'] = data
    return jsonify(body), status


def error_response(error, status=400):
    return jsonify({'success': False, 'error': error}), status
