"""Rendered configuration payloads for the provisioned services."""

from string import Template
from typing import Any, Dict

PRIMARY_PROPERTIES = Template("""\
jdbc.driver=org.postgresql.Driver
jdbc.url=jdbc:postgresql://bb-postgres:5432/${pg_database}
jdbc.user=${pg_user}
jdbc.password=${pg_password}

server.proxy-name=localhost
server.proxy-port=${primary_port}
server.scheme=https
server.secure=true

setup.baseUrl=https://localhost:${primary_port}
setup.displayName=${primary_name}
setup.sysadmin.username=${admin_user}
setup.sysadmin.password=${admin_password}
setup.license=${license}

plugin.ssh.baseurl=ssh://git@bb-nginx:${ssh_port}

plugin.search.config.baseurl=http://bb-opensearch:9200
""")

MIRROR_PROPERTIES = Template("""\
application.mode=mirror

server.proxy-name=localhost
server.proxy-port=${mirror_port}
server.scheme=https
server.secure=true

setup.baseUrl=https://bb-nginx:8443
setup.displayName=${mirror_name}

# Mirror connects to Primary via Nginx HTTPS
plugin.mirroring.upstream.url=https://bb-nginx:443
plugin.mirroring.upstream.type=server
""")

NGINX_CONF = Template("""\
events { worker_connections 1024; }

http {
    proxy_read_timeout 300;
    proxy_connect_timeout 300;
    proxy_send_timeout 300;

    server {
        listen 443 ssl;
        server_name localhost bb-primary bb-nginx;

        ssl_certificate /etc/nginx/certs/fullchain.pem;
        ssl_certificate_key /etc/nginx/certs/privkey.pem;

        location / {
            proxy_pass http://bb-primary:7990;
            proxy_set_header X-Forwarded-Host $$host;
            proxy_set_header X-Forwarded-Server $$host;
            proxy_set_header X-Forwarded-For $$proxy_add_x_forwarded_for;
            proxy_set_header X-Real-IP $$remote_addr;
            proxy_set_header X-Forwarded-Proto https;

            proxy_http_version 1.1;
            proxy_set_header Upgrade $$http_upgrade;
            proxy_set_header Connection "upgrade";
        }
    }

    server {
        listen 8443 ssl;
        server_name localhost bb-mirror;

        ssl_certificate /etc/nginx/certs/fullchain.pem;
        ssl_certificate_key /etc/nginx/certs/privkey.pem;

        location / {
            proxy_pass http://bb-mirror:7990;
            proxy_set_header X-Forwarded-Host $$host;
            proxy_set_header X-Forwarded-Server $$host;
            proxy_set_header X-Forwarded-For $$proxy_add_x_forwarded_for;
            proxy_set_header X-Real-IP $$remote_addr;
            proxy_set_header X-Forwarded-Proto https;
        }
    }
}

stream {
    server {
        listen 7999;
        proxy_pass bb-primary:7999;
    }
}
""")


def _values(config: Dict[str, Any], license_key: str = "") -> Dict[str, Any]:
    bitbucket = config["bitbucket"]
    postgres = config["postgres"]
    return {
        "pg_database": postgres["database"],
        "pg_user": postgres["user"],
        "pg_password": postgres["password"],
        "primary_port": bitbucket["primary_port"],
        "mirror_port": bitbucket["mirror_port"],
        "ssh_port": bitbucket["ssh_port"],
        "primary_name": bitbucket["primary_name"],
        "mirror_name": bitbucket["mirror_name"],
        "admin_user": bitbucket["admin_user"],
        "admin_password": bitbucket["admin_password"],
        "license": license_key,
    }


def render_primary_properties(config: Dict[str, Any], license_key: str) -> str:
    return PRIMARY_PROPERTIES.substitute(_values(config, license_key))


def render_mirror_properties(config: Dict[str, Any]) -> str:
    return MIRROR_PROPERTIES.substitute(_values(config))


def render_nginx_conf(config: Dict[str, Any]) -> str:
    return NGINX_CONF.substitute(_values(config))
