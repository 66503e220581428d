"""
vpnauth - VPNプロバイダのOAuth2認可とトークンライフサイクル管理

ループバックリダイレクトによるブラウザ認可、トークンのキャッシュと
リフレッシュ、認可済みアクションの実行を提供する。
"""

__version__ = "0.1.0"
