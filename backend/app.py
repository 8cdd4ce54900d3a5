from flask import Flask, request, jsonify
from flask_cors import CORS
import logging

from config import Config, get_provider_configs
from quotecache import QuoteStore, UsageLedger, init_db, run_sync_cycle
from quotecache.db import to_db_timestamp

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)
app.config['QUOTE_DB_PATH'] = Config.QUOTE_DB_PATH


def _db_path():
    return app.config.get('QUOTE_DB_PATH')


def _provider_or_404(asset_class):
    provider = get_provider_configs().get(asset_class)
    if provider is None:
        return None, (jsonify({'error': f'Unknown asset class: {asset_class}'}), 404)
    return provider, None


def _serialize_quote(quote):
    out = dict(quote)
    for key in ('last_updated', 'metadata_updated_at', 'created_at'):
        out[key] = to_db_timestamp(out[key]) if out.get(key) else None
    return out


@app.route('/api/quotes/<asset_class>', methods=['GET'])
def get_quotes(asset_class):
    """Cached quotes for an asset class; never calls upstream"""
    provider, error = _provider_or_404(asset_class)
    if error:
        return error

    try:
        init_db(_db_path())
        quotes = QuoteStore(provider.asset_class, _db_path()).get_quotes()
    except Exception as e:
        logger.error(f"Error fetching {asset_class} quotes: {e}")
        return jsonify({'error': str(e)}), 500

    last_updated = max((q['last_updated'] for q in quotes), default=None)
    return jsonify({
        'quotes': [_serialize_quote(q) for q in quotes],
        'last_updated': to_db_timestamp(last_updated) if last_updated else None,
    })


@app.route('/api/refresh/<asset_class>', methods=['GET', 'POST'])
def refresh_quotes(asset_class):
    """Run one sync cycle; ?force=true bypasses the minimum interval but not the hard stop"""
    provider, error = _provider_or_404(asset_class)
    if error:
        return error

    force = request.args.get('force', 'false').lower() == 'true'
    report = run_sync_cycle(provider, db_path=_db_path(), force=force)

    status_code = 502 if report.status == 'failed' else 200
    return jsonify(report.to_dict()), status_code


@app.route('/api/budget/<asset_class>', methods=['GET'])
def get_budget(asset_class):
    """Current month's upstream usage for an asset class's provider"""
    provider, error = _provider_or_404(asset_class)
    if error:
        return error

    try:
        init_db(_db_path())
        summary = UsageLedger(_db_path()).summary(
            provider.name,
            provider.monthly_limit,
            only_successful=provider.count_only_successful
        )
        last_refresh = QuoteStore(provider.asset_class, _db_path()).get_last_refresh_timestamp()
    except Exception as e:
        logger.error(f"Error fetching {asset_class} budget: {e}")
        return jsonify({'error': str(e)}), 500

    summary['hard_stop'] = provider.hard_stop
    summary['warning_threshold'] = provider.warning_threshold
    summary['last_refresh'] = to_db_timestamp(last_refresh) if last_refresh else None
    return jsonify(summary)


@app.route('/api/health', methods=['GET'])
def health_check():
    """Health check endpoint"""
    return jsonify({'status': 'healthy'})


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    init_db(_db_path())
    app.run(debug=Config.DEBUG, port=5000)
